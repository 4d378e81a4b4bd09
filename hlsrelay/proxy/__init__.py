"""HLS relay proxy core

This package provides the stateless request path of the relay:
- Content classification (manifest, segment, subtitle, other)
- Playlist rewriting so every reference routes back through the proxy
- Forwarding pipeline with buffered and streamed upstream transfer
"""

from .classifier import classify, content_type_for, transfer_mode_for
from .rewriter import rewrite
from .pipeline import ForwardingPipeline

__all__ = ["classify", "content_type_for", "transfer_mode_for", "rewrite", "ForwardingPipeline"]
