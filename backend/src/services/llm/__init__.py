"""LLM provider layer"""
