"""
Huginn core: configuration and error taxonomy.
"""
