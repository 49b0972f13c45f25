"""
StealthPay - Command Line Interface
"""
