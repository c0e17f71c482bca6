"""Configuration subpackage - settings, pricing document schema and provider."""
