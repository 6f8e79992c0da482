"""University schedule system client"""
