"""
identity_portal.api.routers

Router modules, one per API area.
"""

# Package marker.
