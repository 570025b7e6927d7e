"""Business logic services.

Modules are imported directly (e.g. ``from relaychat.services.streaming import
StreamingPipeline``); nothing is re-exported here so that configuration can
import the provider registry without pulling in the store.
"""
