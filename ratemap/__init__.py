"""ratemap package initializer.

This package turns cumulative county counts into per-100k rates, classifies
them into ordered categories and joins them to reprojected county
boundaries, ready for a choropleth.  Modules cover record cleaning, the
rate pipeline, geometry preparation, source downloads and input caching.
See individual module docstrings for details.
"""
