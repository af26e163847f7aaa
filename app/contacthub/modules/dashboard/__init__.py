"""
Dashboards: birthday reminders and system activity summaries.
"""
