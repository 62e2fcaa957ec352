"""Bounded parallel batch execution of CLI workers with file-backed sessions.

A batch is normalized into jobs, scheduled under a concurrency cap (one
subprocess per job, optionally inside its own git worktree) and tracked as a
session on disk. The session directory is the only link between the process
that runs the batch and later ``status``/``results``/``list`` invocations, so
a caller can start hours of work and return immediately.
"""
