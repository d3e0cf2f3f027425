"""
clouddisk-py: personal cloud drive serving a sandboxed directory over HTTP
Built with FastAPI + Uvicorn + aiofiles
"""

__version__ = "1.0.0"
__author__ = "clouddisk-py"
__description__ = "Personal file storage with range streaming for media playback"
