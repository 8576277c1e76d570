"""Server-side rendering front server: streams pages from a pre-built bundle
and serves the sitemap, RSS feed, robots.txt and analytics beacon."""

__version__ = "1.0.0"
