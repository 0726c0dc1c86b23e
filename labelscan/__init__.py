"""
labelscan - label detection, template matching and region recognition.

Subpackages:
    detection    probability map -> document quad -> rectified label
    matching     ORB features, homography matching, region projection
    recognition  OCR / barcode engines and the concurrent recognizer
    pipeline     orchestration, live single-flight scanning, Qt worker
    templates    template model and repository contract
"""

__version__ = "0.1.0"
