"""Tests for the MELCloud Home integration."""
