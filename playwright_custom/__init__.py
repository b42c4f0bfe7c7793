"""Playwright-backed implementation of the crawlflow browser contract."""
