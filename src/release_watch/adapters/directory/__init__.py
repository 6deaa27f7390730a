"""Subscription directory adapters."""

from release_watch.adapters.directory.yaml_directory import YamlSubscriptionDirectory

__all__ = ["YamlSubscriptionDirectory"]
