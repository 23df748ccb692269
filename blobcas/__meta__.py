# -*- coding: utf-8 -*-
"""Define project metadata
"""

__title__ = "blobcas"
__summary__ = "A content-addressed blob store served over HTTP."

__version__ = "0.1.0"

__install_requires__ = [
    "anyio",
    "fastapi",
    "pydantic-settings",
    "python-multipart",
    "rich",
    "typer",
    "uvicorn",
]
__tests_require__ = ["pytest", "httpx"]

__author__ = "Weedon & Scott Studios"
__email__ = "Studios@WeedonAndScott.com"

__license__ = "MIT License"
