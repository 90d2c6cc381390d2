"""MCP tool registrations for the Image Studio MCP Server"""
