
__version__ = "0.1.0"
__banner__ = \
"""
# asyshare %s 
# Static directory server with upload support
""" % __version__
