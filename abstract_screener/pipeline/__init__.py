"""Queued batch evaluation of review sessions.

Import submodules directly, e.g.
``from abstract_screener.pipeline.batch_processor import BatchProcessor``.
"""
