"""Outreach pipeline and approval orchestration engine"""
