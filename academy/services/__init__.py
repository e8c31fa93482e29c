"""
Service layer - checkout, order, payment and enrollment business logic
"""
