"""
Data Export & Reporting

Turns operational record sets into downloadable CSV and document artifacts,
synchronously or through background jobs processed by Celery workers, and
aggregates export activity into period-over-period analytics.
"""
