"""Subscription lifecycle and entitlement service for the booking product."""
