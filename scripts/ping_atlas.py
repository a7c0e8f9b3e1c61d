import os
from pymongo.mongo_client import MongoClient
from pymongo.server_api import ServerApi
from dotenv import load_dotenv

load_dotenv()  # reads .env in project root
uri = os.getenv("MONGODB_URI") or os.getenv("MONGO_URI") or os.getenv("DATABASE_URI")
print("Using URI:", (uri or "")[:40] + "...")  # don’t dump whole secret to console

client = MongoClient(uri, server_api=ServerApi("1"))
try:
  client.admin.command("ping")
  print("✅ Pinged your deployment. You successfully connected to MongoDB!")

  # change streams only work against a replica set or a sharded cluster
  hello = client.admin.command("hello")
  if hello.get("setName"):
    print(f"✅ Replica set: {hello['setName']} (change streams available)")
  elif hello.get("msg") == "isdbgrid":
    print("✅ Sharded cluster (change streams available)")
  else:
    print("❌ Standalone server: change streams are NOT available")
except Exception as e:
  print("❌ Mongo ping failed:", repr(e))
  raise
finally:
  client.close()
