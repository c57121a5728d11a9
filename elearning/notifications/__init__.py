"""
In-app notifications, analytics events and transactional e-mail.

Author: Academy Development Team
Version: 1.0.0
"""
