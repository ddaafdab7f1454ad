"""Reusable test doubles and builders."""
