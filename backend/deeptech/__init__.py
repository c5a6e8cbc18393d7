"""
Deep Tech Accounts backend
"""
