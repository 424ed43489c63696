"""Provider adapter implementations

Adapters register themselves with @register_provider; modules named
*_providers.py are imported by scan_and_import_providers().
"""

__all__ = []
