"""Waiting and scenario services built on the Kubernetes integration."""
