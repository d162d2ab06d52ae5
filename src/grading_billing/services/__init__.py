"""Billing domain services"""
