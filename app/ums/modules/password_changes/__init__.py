"""
Password-change approval workflow.

- A user submits a change; it waits as PENDING until an admin decides.
- PENDING -> APPROVED (credential replaced) or PENDING -> REJECTED.
- Resolution is one-shot: a second decision on the same request is a not-found.
"""
