"""
Payroll Core - Pydantic Schemas Package

Request and response schemas for the API.
"""
