"""
Dark Pool Settlement Layer

Core imports are lazily loaded so that importing a submodule does not pull in
the HTTP stack. For direct module access, import from submodules:

    from darkpool.crypto import compute_commitment, encrypt_order
    from darkpool.exchange import MatchingEngine
    from darkpool.channels import ChannelLedger
"""

# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'DarkPoolService':
        from .service import DarkPoolService
        return DarkPoolService
    elif name == 'create_app':
        from .node import create_app
        return create_app
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'darkpool' has no attribute {name!r}")

__all__ = ['DarkPoolService', 'create_app', 'load_config']
