"""
Payroll Core - Routers Package

FastAPI route handlers.

Routers:
- payroll: Payrolls, adjustments, payroll runs and pay stubs
"""
