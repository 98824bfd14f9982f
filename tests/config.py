"""
Test configuration for GymMaster API
"""
# Test user credentials - all passwords are 'password123'
TEST_PASSWORD = "password123"

TEST_ADMIN = {
    "email": "admin@gymmaster.com",
    "first_name": "Ada",
    "last_name": "Admin",
}

TEST_STAFF = {
    "email": "staff@gymmaster.com",
    "first_name": "Sam",
    "last_name": "Staff",
}

TEST_TRAINER = {
    "email": "trainer@gymmaster.com",
    "first_name": "Tess",
    "last_name": "Trainer",
}

TEST_MEMBER = {
    "email": "member@gymmaster.com",
    "first_name": "Max",
    "last_name": "Member",
    "phone": "555-0100",
}

TEST_BRANCH = {
    "name": "B1",
    "address": "1 Main Street",
    "city": "Springfield",
}

TEST_QR_CODE = "QR-123"
