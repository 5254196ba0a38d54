"""ReferralHub backend application"""
