from sqlalchemy import DateTime

# Timestamps are stored and compared as naive UTC (datetime.utcnow)
NaiveDateTime = DateTime(timezone=False)
