#!/usr/bin/env python3
"""
Walks a running Hela Loans server through the borrower journey:
signup, login, terms, application, amount selection and fee quote.
Optionally sends a fake PayHero callback for a deposit reference.
"""

import asyncio
import sys
from typing import Dict, Optional

import httpx

BASE_URL = "http://127.0.0.1:8000"  # Change this to your server URL
TEST_USER = {
    "email": "borrower@example.com",
    "full_name": "Jane Wanjiku",
    "phone": "0712345678",
    "password": "testpassword123"
}
TEST_PROFILE = {
    "full_name": "Jane Wanjiku",
    "id_number": "12345678",
    "whatsapp_number": "0712345678",
    "next_of_kin_name": "John Kamau",
    "next_of_kin_contact": "0723456789",
    "contact_person_name": "Mary Achieng",
    "contact_person_phone": "0734567890",
    "occupation": "Nurse",
    "loan_reason": "School fees",
    "income_tier": "20k-50k",
    "employment_status": "employed",
}


class BorrowerFlowTester:
    def __init__(self, base_url: str):
        self.base_url = base_url
        self.access_token: Optional[str] = None
        self.application_id: Optional[str] = None

    @property
    def headers(self) -> Dict:
        return {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}

    async def _call(self, label: str, method: str, path: str, expected: int, **kwargs) -> Dict:
        print(f"\n▶ {label}...")
        async with httpx.AsyncClient() as client:
            try:
                response = await client.request(method, f"{self.base_url}{path}", headers=self.headers, **kwargs)
            except httpx.HTTPError as e:
                print(f"❌ Error during {label.lower()}: {e}")
                return {"error": str(e)}

        print(f"Status Code: {response.status_code}")
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}
        print(f"Response: {body}")
        print("✅ OK" if response.status_code == expected else f"❌ Expected {expected}")
        return body

    async def test_signup(self) -> Dict:
        # 409 when the user already exists from an earlier run
        return await self._call("Registration", "POST", "/auth/signup", 201, json=TEST_USER)

    async def test_login(self) -> Dict:
        result = await self._call(
            "Login", "POST", "/auth/login", 200,
            data={"username": TEST_USER["email"], "password": TEST_USER["password"]},
        )
        self.access_token = result.get("access_token")
        return result

    async def test_accept_terms(self) -> Dict:
        return await self._call("Accept terms", "POST", "/auth/terms", 200)

    async def test_apply(self) -> Dict:
        result = await self._call("Submit application", "POST", "/loans/applications", 201,
                                  json={"profile": TEST_PROFILE})
        self.application_id = result.get("application_id")
        if not self.application_id:
            listing = await self._call("List applications", "GET", "/loans/applications", 200)
            pending = [a for a in listing.get("data", []) if a["status"] == "pending"]
            self.application_id = pending[0]["application_id"] if pending else None
        return result

    async def test_select_amount(self) -> Dict:
        if not self.application_id:
            print("❌ No application available. Submit one first.")
            return {"error": "No application"}
        return await self._call(
            "Select amount", "POST", f"/loans/applications/{self.application_id}/selection", 200,
            json={"amount": 4200},
        )

    async def test_fee_quote(self) -> Dict:
        return await self._call("Fee quote", "GET", "/loans/fee-quote", 200,
                                params={"amount": 4200, "loan_limit": 8400})

    async def test_dashboard(self) -> Dict:
        return await self._call("Dashboard", "GET", "/loans/dashboard", 200)

    async def test_callback(self, reference: str) -> Dict:
        payload = {"status": "Success", "external_reference": reference, "amount": 100}
        return await self._call("Simulated PayHero callback", "POST", "/payments/callback", 200, json=payload)

    async def test_unauthorized_access(self) -> Dict:
        token, self.access_token = self.access_token, None
        try:
            return await self._call("Unauthorized access", "GET", "/loans/dashboard", 401)
        finally:
            self.access_token = token

    async def run_all_tests(self, callback_reference: Optional[str] = None):
        print("🚀 Starting borrower flow checks...")
        print(f"Base URL: {self.base_url}")
        print("=" * 50)

        await self.test_signup()
        await self.test_login()
        await self.test_accept_terms()
        await self.test_apply()
        await self.test_select_amount()
        await self.test_fee_quote()
        await self.test_dashboard()
        await self.test_unauthorized_access()
        if callback_reference:
            await self.test_callback(callback_reference)

        print("\n" + "=" * 50)
        print("🎉 All checks completed!")


async def main():
    tester = BorrowerFlowTester(BASE_URL)
    await tester.run_all_tests(sys.argv[1] if len(sys.argv) > 1 else None)

if __name__ == "__main__":
    print("Borrower Flow Tester")
    print("Make sure your FastAPI server is running on", BASE_URL)
    print("Usage: smoke_test.py [deposit_reference_to_settle]")
    asyncio.run(main())
