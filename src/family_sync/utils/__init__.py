"""Stateless helpers: invite codes and derived item views."""
