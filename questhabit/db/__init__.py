"""Persistence: store interface, in-memory and PostgreSQL implementations"""
