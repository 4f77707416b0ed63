"""Booking reservation and finalization domains"""
