"""
Cache Domain Module

Domain-Driven Design implementation of the query cache core.
Contains entities, value objects, interfaces, and domain services.
"""
