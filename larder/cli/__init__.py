"""Command-line interface for larder.

Usage:
    larder serve [--host] [--port]
    larder scan <image> [--api-url URL] [--no-review]
    larder status <receipt id>
    larder history [--status STATUS] [--limit N]
    larder delete <receipt id>
"""
