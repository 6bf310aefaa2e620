from uuid import UUID

from fastapi import APIRouter, Depends, status

from core.audit import AuditEntry, platform_notifications
from core.auth import Principal
from core.container import Services, get_current_admin, get_current_super_admin, get_current_user, get_services

from .models import (
    ApplyReferralRequest,
    CoinStats,
    CreateWithdrawalRequest,
    LeaderboardEntry,
    ProcessWithdrawalRequest,
    Referral,
    ReferralStats,
    SecureBankDetails,
    Withdrawal,
    WithdrawalReceipt,
    WithdrawalView,
)


router = APIRouter()


@router.post("/withdrawals", response_model=WithdrawalReceipt, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def create_withdrawal(
    request: CreateWithdrawalRequest,
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> WithdrawalReceipt:
    return services.withdrawals.create(principal.user_id, request)


@router.get("/withdrawals/my-withdrawals", response_model=list[WithdrawalView], tags=["Withdrawals"])
def my_withdrawals(
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[WithdrawalView]:
    return services.withdrawals.list_for_user(principal.user_id)


@router.get("/withdrawals/pending", response_model=list[WithdrawalView], tags=["Withdrawals"])
def pending_withdrawals(
    admin: Principal = Depends(get_current_admin),
    services: Services = Depends(get_services),
) -> list[WithdrawalView]:
    return services.withdrawals.list_pending()


@router.get("/withdrawals/{withdrawal_id}/details", response_model=SecureBankDetails, tags=["Withdrawals"])
def withdrawal_details(
    withdrawal_id: UUID,
    admin: Principal = Depends(get_current_admin),
    services: Services = Depends(get_services),
) -> SecureBankDetails:
    return services.withdrawals.secure_details(withdrawal_id, admin)


@router.put("/withdrawals/{withdrawal_id}/process", response_model=Withdrawal, tags=["Withdrawals"])
def process_withdrawal(
    withdrawal_id: UUID,
    request: ProcessWithdrawalRequest,
    admin: Principal = Depends(get_current_admin),
    services: Services = Depends(get_services),
) -> Withdrawal:
    return services.withdrawals.process(withdrawal_id, admin, request.status, request.note)


@router.post("/referrals/apply", response_model=Referral, status_code=status.HTTP_201_CREATED, tags=["Referrals"])
def apply_referral(
    request: ApplyReferralRequest,
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Referral:
    return services.ledger.apply_referral_code(principal.user_id, request.referral_code)


@router.get("/referrals/stats", response_model=ReferralStats, tags=["Referrals"])
def referral_stats(
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> ReferralStats:
    return services.ledger.referral_stats(principal.user_id)


@router.get("/users/me/coins", response_model=CoinStats, tags=["Users"])
def my_coins(
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> CoinStats:
    return services.ledger.coin_stats(principal.user_id)


@router.get("/leaderboard", response_model=list[LeaderboardEntry], tags=["Users"])
def leaderboard(
    limit: int = 20,
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[LeaderboardEntry]:
    return services.ledger.leaderboard(min(max(limit, 1), 100))


@router.get("/superadmin/notifications", response_model=list[AuditEntry], tags=["Admin"])
def notifications(
    principal: Principal = Depends(get_current_super_admin),
    services: Services = Depends(get_services),
) -> list[AuditEntry]:
    return platform_notifications(services.storage)
