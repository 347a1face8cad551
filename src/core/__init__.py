"""Core domain package for switchboard.

Core contains account sessions, peer resolution, matching, deduplication and
routing logic without any Telegram, HTTP or storage-specific code, keeping the
business logic portable and testable with fakes.
"""
