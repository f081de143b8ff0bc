"""Upgrade plan construction.

The plan lists, per project, the packages the external executor should move to
their new versions. It is written once and consumed only by the executor.
"""
