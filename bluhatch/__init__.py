"""Bluhatch evidence service — job evidence capture, anchoring and reports."""

__version__ = "0.1.0"
