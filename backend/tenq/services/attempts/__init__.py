"""Attempt domain services: scoring and the attempt lifecycle.

Everything here runs inside an application context and is called by the
HTTP blueprints, keeping transport concerns out of the state machine.
"""
