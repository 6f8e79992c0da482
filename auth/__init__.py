"""Upstream session handling"""
