"""task-beacon: background task notifications for browser tabs.

A producer (usually a CLI hook) reports that a task for a project has
started or finished; the server keeps a bounded, TTL-limited history on
disk and streams changes to subscribed browser tabs over SSE.
"""

__version__ = "0.3.0"
