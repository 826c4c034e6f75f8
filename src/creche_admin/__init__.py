"""Crèche administration backend.

Feature modules (users, children, enrollments, archival, audit) each keep a
thin Flask controller on top of service and repository layers.
"""
