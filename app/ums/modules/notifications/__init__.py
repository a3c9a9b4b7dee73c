"""
In-app notifications and email side-channel.

Delivery is best-effort: the notification row is always written, email
failures are logged and never reach the caller of the triggering action.
"""
