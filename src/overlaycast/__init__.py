"""overlaycast — branded overlay capture and export.

Composite an event's transparent frame overlay onto a live camera feed
or an uploaded video/image, then export the result as an encoded video,
a high-resolution still, or a print-ready PDF.
"""

__version__ = "0.1.0"
